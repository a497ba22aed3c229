"""
Corona & Welzijn data preparation.

Recodes the raw Wave 1 / Wave 2 survey export, scores composite scales and
checks how consistently participants answered across waves.
"""
