from beartype import beartype as _beartype
from beartype import BeartypeConf

# ansible output is often not a terminal
beartype = _beartype(conf=BeartypeConf(is_color=False))
