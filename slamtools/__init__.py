"""Visual SLAM building blocks: Lie groups, cameras, triangulation, optimisation and mapping."""

__version__ = "0.1.0"