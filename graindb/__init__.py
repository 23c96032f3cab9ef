"""
graindb: declare relational schemas once, converge live databases to them,
and build parameterized statements against them for several SQL engines.
"""

__version__ = "0.4.0"
