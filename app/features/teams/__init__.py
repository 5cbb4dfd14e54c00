"""
Team-based staff permission management.

Staff users belong to teams from a fixed catalog; their effective permissions
are the union of a base grant and the permission sets of their team roles.
"""
