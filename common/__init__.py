"""공통 모듈 - 로깅, 설정"""
