"""
modctl - command-line tool for Modula module catalogs.
"""
