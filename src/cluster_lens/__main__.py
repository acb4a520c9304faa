"""Entry point for ``python -m cluster_lens``."""

from cluster_lens.main import run

if __name__ == "__main__":
    run()
