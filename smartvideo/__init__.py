"""Smart video ad generator: product image in, assembled video out."""

__version__ = "0.1.0"
