"""DevSec - Device Security Assessment Engine with MCP Server"""
__version__ = "1.0.0"
