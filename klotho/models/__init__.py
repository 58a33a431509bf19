"""Models which describe the parameters, inputs, and outputs of a battery cell"""
