from launchpad.main import run

run()
