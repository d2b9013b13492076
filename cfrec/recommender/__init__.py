"""Collaborative filtering core for CFRec.

This package contains the similarity calculator, the recommendation scorer,
the hybrid blender, the recommendation cache and the engine facade that ties
them together over injected behavior and similarity stores.
"""
