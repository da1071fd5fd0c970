SCHEMA = "parimutuel"
