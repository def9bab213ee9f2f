"""Adds and updates LuaLS / EmmyLua ``---@`` annotations in Lua sources."""

__version__ = "0.1.0"
