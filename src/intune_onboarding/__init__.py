"""Moves macOS devices off Active Directory and Jamf and hands them to Intune Company Portal."""

__version__ = "1.0.0"
