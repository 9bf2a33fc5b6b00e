from typing import List
from mcp.types import Tool

from src.servers.fne.tools.fne_api import totals_tools, invoice_tools


class FneApiToolFactory:

    @staticmethod
    def get_all_tools() -> List[Tool]:
        return [*totals_tools, *invoice_tools]

    @staticmethod
    def get_offline_tools() -> List[Tool]:
        """Tools that never reach the FNE service and need no credentials"""
        return list(totals_tools)
