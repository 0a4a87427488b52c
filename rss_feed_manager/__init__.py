"""
RSS Feed Manager - Forward new RSS/Atom feed items to chat channels.

A Python application that checks a list of feed subscriptions, finds
items published since the last run, and posts them to Slack or Telegram
channels while tracking a per-feed watermark between runs.
"""

__version__ = "1.0.0"
