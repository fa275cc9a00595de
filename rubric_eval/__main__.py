"""
Entry point for running rubric_eval as a module.

Usage:
    python -m rubric_eval run --config requests/onboarding.yaml
    python -m rubric_eval assign --config requests/onboarding.yaml --seed 7
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
