"""
Venue access: signing, clock skew, transport and the resilient dispatcher.
"""
