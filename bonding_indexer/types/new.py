# bonding_indexer/types/new.py

from typing import NewType


EvmAddress = NewType('EvmAddress', str)
EvmHash = NewType('EvmHash', str)
HexStr = NewType('HexStr', str)
HexInt = NewType('HexInt', str)
ErrorId = NewType('ErrorId', str)

# 18-decimal fixed point integer
FixedPoint = NewType('FixedPoint', int)
BasisPoints = NewType('BasisPoints', int)
BlockNumber = NewType('BlockNumber', int)
Timestamp = NewType('Timestamp', int)
