"""Realtime fan-out to live subscribers."""

from citypulse.realtime.fanout import Broadcaster, Envelope, Subscription, Topic

__all__ = ["Broadcaster", "Envelope", "Subscription", "Topic"]
