"""Block-derivation driver: output step, driver state and loop, and an in-memory fake chain."""