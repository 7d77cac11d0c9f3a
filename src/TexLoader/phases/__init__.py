"""Pipeline stages: level-0 row transfer and mip level filtering."""
