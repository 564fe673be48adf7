"""
TUI module for the chtop dashboard.

This module provides the building blocks for the dashboard:
- OutputBuffer, BufferHandler: log capture for the log panel
- create_layout, make_panel: layout structure and styled panels
- KeyboardTask: non-blocking keyboard input
- DashboardController: Live display, keys and signal handling
"""

from chtop.tui.buffer import BufferHandler, OutputBuffer
from chtop.tui.controller import DashboardController
from chtop.tui.keyboard import KeyboardTask
from chtop.tui.layout import create_layout, make_cluster_panel, make_panel

__all__ = [
    "BufferHandler",
    "DashboardController",
    "KeyboardTask",
    "OutputBuffer",
    "create_layout",
    "make_cluster_panel",
    "make_panel",
]
