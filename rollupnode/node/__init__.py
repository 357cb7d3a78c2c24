"""Node-level configuration and logging setup."""