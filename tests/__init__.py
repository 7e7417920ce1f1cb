"""CDA copier test suite.

Test organization:
- unit/: one module per library module, plus end-to-end runs of the copier
  against a local export tree built in tmp_path
"""
