"""SNI censorship probe: sends ClientHellos with chosen SNI values to sink endpoints
and classifies how the network reacts."""

__version__ = "0.1.0"
