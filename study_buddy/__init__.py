"""
Study Buddy Matchmaker

Pairs anonymous users into ephemeral study sessions by shared interest
tags and relays chat and video-call signaling between the two participants.
"""

__version__ = "1.0.0"
