# -*- coding: utf-8 -*-
"""Tolerance Monitor REST API."""

from riskguard.tolerance_monitor.api.router import router

__all__ = ["router"]
