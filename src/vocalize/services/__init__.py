"""
Vocalize services: session flows and the resource APIs built on the client.
"""
