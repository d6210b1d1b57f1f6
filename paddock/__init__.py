"""
Paddock: backend for an F1 fan community.
"""
