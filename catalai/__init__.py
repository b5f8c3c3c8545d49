"""catalai — decision-matrix classification of business processes."""

__version__ = "0.4.0"
