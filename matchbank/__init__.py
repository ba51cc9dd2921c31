"""
MatchBank: settlement engine for a fantasy-football card economy.
"""
