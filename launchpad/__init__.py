"""
Taxed token launchpad client.
"""
