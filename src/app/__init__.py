"""
Command line application for the media browser.
"""
