"""Test package for the QuickReflex reaction trainer.

Core tests drive the trial engine with a ``FakeClock`` so every timer fires
deterministically; store tests use pytest's ``tmp_path``; transport tests
patch ``urllib.request.urlopen``. The UI smoke test runs headlessly using
pygame's dummy video driver. Run ``pytest`` from the project root.
"""
