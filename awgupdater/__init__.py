"""Signed update discovery, verified download and installer launch."""

__version__ = "1.0.0"

__all__ = ["downloader", "httpclient", "msirunner", "signify", "version", "versions"]