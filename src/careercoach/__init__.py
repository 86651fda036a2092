"""careercoach: planning and prioritization engine for job-search coaching."""

__all__ = ["__version__"]

__version__ = "0.1.0"
