"""
Remote API access for Reddit Archiver

Classes:
    RedditAPI: Scheduler-gated client for the JSON endpoints
    OAuthSession: Password grant token handling
"""

from reddit_archiver.api.auth import OAuthCredentials, OAuthSession, load_credentials
from reddit_archiver.api.client import RedditAPI, ListingPage, PostThread

__all__ = ['RedditAPI', 'ListingPage', 'PostThread', 'OAuthCredentials', 'OAuthSession', 'load_credentials']
