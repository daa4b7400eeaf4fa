"""Allow running as: python -m compliance_tracker"""

from compliance_tracker.main import cli

if __name__ == "__main__":
    cli()
