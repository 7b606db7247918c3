from glucolink.datasource.libreview import (
    LibreLinkUpClient,
    parse_graph_data,
    parse_reading,
    parse_timestamp,
)

__all__ = [
    "LibreLinkUpClient",
    "parse_graph_data",
    "parse_reading",
    "parse_timestamp",
]
