"""Tools for estimating the state of a cell from measurements"""
