"""Prepare Nordic USB and J-Link devices with the firmware an application needs."""

__version__ = "0.4.0"
