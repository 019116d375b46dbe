"""Command line interface modules.

This package provides the command-line tools for:
- Starting the control runtime and the supervised proxy core
- Rendering the running configuration without launching anything
- Displaying the current core and settings status
"""
