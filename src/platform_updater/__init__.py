"""
Platform Updater - unattended updater for the platform core and its modules.

This package checks the release service for newer versions of the core and
each installed module, backs up the database and every directory it is about
to replace, installs the new artifacts, applies schema migrations, and rolls
back and disables further automatic runs when anything goes wrong.
"""

__version__ = "0.1.0"
