"""
Process module - supervised child processes and tool servers.
"""

from .supervisor import ProcessHandle, ProcessState, ProcessSupervisor

__all__ = ["ProcessHandle", "ProcessState", "ProcessSupervisor"]
