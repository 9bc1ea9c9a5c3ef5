"""
Adaptive Digit Trading Bot

Odd/even last-digit trading bot for the Deriv websocket API, driven by
an ensemble of eight predictive models with online adaptation.
"""

__version__ = "0.1.0"
__author__ = "Adaptive Digit Trading Team"
