"""Wifi-Display helpers: wpa_supplicant control bus and messages, UIBC packets and utilities."""

__version__ = "1.0.0"