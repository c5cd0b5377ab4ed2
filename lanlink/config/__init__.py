"""Configuration module for lanlink."""

from lanlink.config.schema import LanLinkConfig

__all__ = ["LanLinkConfig"]
