"""
Example models and training drivers built on :mod:`layerwise`.

Each subpackage supplies a model (``model.py``) plus a declarative
``config.yaml`` consumed by its driver script.
"""
