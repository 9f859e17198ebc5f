"""Core node model, errors and storage backends"""
