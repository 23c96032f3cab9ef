"""
The score: dialect-neutral description of grains, tables, indices, keys and
views. Pure data plus invariants, no I/O.
"""
