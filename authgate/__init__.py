"""Multi-factor authentication core with failure-isolated audit delivery."""
