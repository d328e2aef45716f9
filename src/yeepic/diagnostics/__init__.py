"""Plot files and checkpoint/restart (HDF5)."""
