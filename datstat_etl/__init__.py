""" DATStat survey export to study archive """
